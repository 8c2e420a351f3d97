import uvicorn

from scrape_governor.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "scrape_governor.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
