# ==============================================================================
# config.py
# ------------------------------------------------------------------------------
# Configuration settings for the branch bonus calculator.
# Uses environment variables so deployments can override paths and secrets.
# ==============================================================================

import os
from dotenv import load_dotenv

# Determine the absolute path of the project directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load environment variables from a .env file located in the project root
load_dotenv(os.path.join(basedir, '.env'))

class Config:
    """
    Base configuration class. Contains default settings that can be overridden
    by environment-specific configurations.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-should-really-set-a-secret-key-in-your-env-file'

    # --- Database Configuration ---
    # The purchase-history store is a local SQLite file in the 'instance' folder.
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'instance/history.db')

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- File Upload Configuration ---
    ALLOWED_EXTENSIONS = {'.xlsx'}

    # POS exports for a full year can be large
    MAX_CONTENT_LENGTH = 64 * 1024 * 1024

    # --- History Import ---
    # Rows committed per chunk before control goes back to the caller.
    IMPORT_CHUNK_SIZE = int(os.environ.get('IMPORT_CHUNK_SIZE') or 2000)

    # Branches created by `flask seed` when the store list is empty.
    DEFAULT_STORE_NAMES = [
        name.strip() for name in
        (os.environ.get('DEFAULT_STORE_NAMES') or '總店,中正店,民生店').split(',')
        if name.strip()
    ]
