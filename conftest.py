from __future__ import annotations

import importlib
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SUPABASE_URL", "https://project.supabase.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-test-key")
os.environ.setdefault("SITE_URL", "http://testserver")

for name in [
    "smartmarks.backend",
    "smartmarks.sync",
    "smartmarks.pages",
    "smartmarks.main",
]:
    importlib.import_module(name)
