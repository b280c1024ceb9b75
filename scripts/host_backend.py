# Runs the API locally with auto-reload.
import uvicorn
import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_DIR))

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8000))

    uvicorn.run(
        "tutorflow_backend.main:app",
        host="127.0.0.1",
        port=port,
        reload=True,
        reload_dirs=[str(SRC_DIR)]
    )
