import os

# Get the base directory of the project (the directory containing this file)
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Path to the data directory (assumes 'data' is at the same level as 'nihongo')
DATA_DIR = os.path.abspath(os.path.join(BASE_DIR, '..', 'data'))

# Local key-value database holding history, saved items and preferences
STATE_DB_NAME = "nihongo.db"
