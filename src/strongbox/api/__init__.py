# API module: FastAPI routes over the backup engine.
