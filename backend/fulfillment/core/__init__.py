from fulfillment.core.config import settings
from fulfillment.core.database import get_db, Base, get_db_session
