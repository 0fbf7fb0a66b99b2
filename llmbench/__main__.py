import uvicorn

from .config import _env_int, _env_str


def main() -> None:
    """Serve the API with uvicorn; HOST and PORT come from the environment."""
    uvicorn.run(
        "llmbench.main:app",
        host=_env_str("HOST", "0.0.0.0") or "0.0.0.0",
        port=_env_int("PORT", 8000),
    )


if __name__ == "__main__":
    main()
