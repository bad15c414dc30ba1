import os
from dotenv import load_dotenv


def load_environment_config():
    """
    Load environment-specific configuration based on APP_ENV variable.

    Environments:
    - production: Uses .env.production
    - sit: Uses .env.sit
    - test: Uses .env.test
    - development: Uses .env (default)
    """
    env = os.getenv('APP_ENV', 'development').lower()

    env_files = {
        'production': '.env.production',
        'sit': '.env.sit',
        'test': '.env.test',
        'development': '.env',
    }

    env_file = env_files.get(env, '.env')

    if os.path.exists(env_file):
        load_dotenv(env_file)
        print(f"🔧 Loaded configuration from: {env_file}")
    else:
        # Fallback to default .env
        load_dotenv()
        print(f"⚠️  Environment file {env_file} not found, using default .env")
        if env != 'development':
            print(f"💡 Create {env_file} for {env} environment configuration")


# Load environment-specific configuration
load_environment_config()


# LLM configuration
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Graph database configuration
NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "")
NEO4J_DATABASE = os.getenv("NEO4J_DATABASE", "neo4j")

# Collaborator timeouts (seconds)
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "20"))

# Overall budget for planning plus execution of one request
PLAN_DEADLINE_SECONDS = float(os.getenv("PLAN_DEADLINE_SECONDS", "120"))

# Planner limits
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "6"))
MAX_PLAN_STEPS = int(os.getenv("MAX_PLAN_STEPS", "12"))

# Result handling thresholds
LARGE_RESULT_NODE_THRESHOLD = int(os.getenv("LARGE_RESULT_NODE_THRESHOLD", "100"))
RECOVERY_CONFIDENCE_THRESHOLD = float(os.getenv("RECOVERY_CONFIDENCE_THRESHOLD", "0.7"))
FUZZY_MATCH_THRESHOLD = float(os.getenv("FUZZY_MATCH_THRESHOLD", "0.3"))

# Connection-path result caps
DIRECT_PATH_LIMIT = int(os.getenv("DIRECT_PATH_LIMIT", "10"))
SHARED_CONNECTION_LIMIT = int(os.getenv("SHARED_CONNECTION_LIMIT", "20"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Application port configuration
APP_PORT = int(os.getenv("APP_PORT", "8092"))


# Parse CORS origins from comma-separated string
cors_origins_str = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]

CORS_ALLOW_CREDENTIALS = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"

# Parse CORS methods
cors_methods_str = os.getenv("CORS_ALLOW_METHODS", "*")
CORS_ALLOW_METHODS = [method.strip() for method in cors_methods_str.split(",") if method.strip()] if cors_methods_str != "*" else ["*"]

# Parse CORS headers
cors_headers_str = os.getenv("CORS_ALLOW_HEADERS", "*")
CORS_ALLOW_HEADERS = [header.strip() for header in cors_headers_str.split(",") if header.strip()] if cors_headers_str != "*" else ["*"]

CORS_MAX_AGE = int(os.getenv("CORS_MAX_AGE", "600"))
