from functools import lru_cache
from dental_funnel.core.catalog import FunnelCatalog, build_catalog
from dental_funnel.platform.collaborators import Collaborators, default_collaborators

@lru_cache
def get_catalog() -> FunnelCatalog:
    return build_catalog()

def get_collaborators() -> Collaborators:
    return default_collaborators()
