import sys
import os

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bonus_ledger.api import app  # noqa: E402

handler = Mangum(app, lifespan="auto")
