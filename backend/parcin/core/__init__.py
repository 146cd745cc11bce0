from parcin.core.config import settings
from parcin.core.database import get_db, Base
from parcin.core.security import decode_token
