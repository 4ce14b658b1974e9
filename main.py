# main.py - FastAPI application entry point
from contextlib import asynccontextmanager
from adapters.api import app
from adapters.database import close_db, init_db
from services.journey_services import init_services
from config import settings

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown"""
    # Startup
    print("🚀 Starting Solo Journey API v1.0...")

    try:
        # Initialize database
        print("📊 Initializing database connection...")
        await init_db()

        # Wire repositories into the use cases
        print("🧭 Initializing recommendation and gacha services...")
        await init_services()

        print("✅ All services initialized successfully!")
        print(f"🌐 API ready at http://{settings.API_HOST}:{settings.API_PORT}")
        print(f"📚 Documentation at http://{settings.API_HOST}:{settings.API_PORT}/docs")
        print("🔗 Main endpoints:")
        print("   - Route preview: POST /recommendations/route-preview")
        print("   - Next stops: POST /recommendations/next")
        print("   - Gacha: POST /gacha/roll/{user_id}")
        print("🔗 Other endpoints:")
        print("   - Health: GET /health")

    except Exception as e:
        print(f"❌ Startup failed: {e}")
        raise

    yield

    # Shutdown
    print("🔄 Shutting down services...")
    await close_db()

# Set lifespan for the app
app.router.lifespan_context = lifespan

if __name__ == "__main__":
    import uvicorn

    print("🚀 Starting server...")
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=False,
        workers=1,
        log_level="info"
    )
