"""
Database Package for the Postcode Hierarchy Service

This package provides:
- SQLAlchemy ORM models for the hierarchy and the decomposed postcodes
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- Read services (resolver, codec, search) and the mutation gateway
- Performance monitoring and query timing
"""

from database.models import (
    Base,
    Country,
    County,
    District,
    Ward,
    Outcode,
    Incode,
    Postcode,
    slugify,
    normalize_code,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    # FastAPI dependencies
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    HierarchyRepository,
    PostcodeRepository,
    RepositoryError,
    EntityNotFoundError,
    AlreadyExistsError,
    ParentNotFoundError,
    ReferentialConflictError,
)
from database.postcode_service import (
    Found,
    NotFoundAt,
    Invalid,
    HierarchyLevel,
    HierarchyResolver,
    PostcodeCodec,
    PostcodeCatalog,
    PostcodeSearchEngine,
    PostcodeFormatError,
    split_postcode,
)
from database.mutation_gateway import MutationGateway
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    reset_metrics,
    configure_monitoring,
)

__all__ = [
    # Base
    'Base',
    # Hierarchy models
    'Country',
    'County',
    'District',
    'Ward',
    # Postcode models
    'Outcode',
    'Incode',
    'Postcode',
    'slugify',
    'normalize_code',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Repositories and errors
    'HierarchyRepository',
    'PostcodeRepository',
    'RepositoryError',
    'EntityNotFoundError',
    'AlreadyExistsError',
    'ParentNotFoundError',
    'ReferentialConflictError',
    # Services
    'Found',
    'NotFoundAt',
    'Invalid',
    'HierarchyLevel',
    'HierarchyResolver',
    'PostcodeCodec',
    'PostcodeCatalog',
    'PostcodeSearchEngine',
    'PostcodeFormatError',
    'split_postcode',
    'MutationGateway',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'reset_metrics',
    'configure_monitoring',
]
