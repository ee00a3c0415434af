import uvicorn

from edge_deploy.core.config import settings
from edge_deploy.server import create_app


def main() -> None:
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
