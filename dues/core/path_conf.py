from pathlib import Path

# Project root (the directory holding the ``dues`` package and ``.env``)
BASE_PATH = Path(__file__).resolve().parent.parent.parent

# Log directory
LOG_DIR = BASE_PATH / 'log'
