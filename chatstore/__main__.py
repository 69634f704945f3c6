import uvicorn

from chatstore.config import get_settings


def main() -> None:
    settings = get_settings()
    # log_config=None keeps the JSON handlers installed by setup_logging
    uvicorn.run("chatstore.main:app", host="0.0.0.0", port=settings.API_PORT, log_config=None)


if __name__ == "__main__":
    main()
