"""External source clients and the static source catalog."""

from medroute.sources.base import HttpSourceClient, SourceClient
from medroute.sources.catalog import SOURCE_CATALOG, SourceInfo
from medroute.sources.ctgov_client import CTGovClient
from medroute.sources.openfda_client import OpenFDAClient
from medroute.sources.pubmed_client import PubMedClient

__all__ = [
    "CTGovClient",
    "HttpSourceClient",
    "OpenFDAClient",
    "PubMedClient",
    "SOURCE_CATALOG",
    "SourceClient",
    "SourceInfo",
]
