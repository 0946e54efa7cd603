import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection; unset means in-memory stores
MONGO_URL: Optional[str] = os.getenv('MONGO_URL')
DB_NAME = os.getenv('DB_NAME', 'adherence')

CORS_ORIGINS: List[str] = os.environ.get('CORS_ORIGINS', '*').split(',')

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

PORT = int(os.getenv('PORT', 8001))


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT
    )
