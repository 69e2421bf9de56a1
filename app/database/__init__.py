# Profile report cache tables
from .cache_models import *
from .connection import init_database, close_database, create_tables, get_session
