import uvicorn

from app import config
from app.app import create_app


CONFIG = config.Config()

config.configure_logging(CONFIG)

app = create_app(CONFIG)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
