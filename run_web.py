"""Run the Pathkeeper web server in development mode."""

import uvicorn

if __name__ == "__main__":
    print("=" * 50)
    print("  Pathkeeper - Campaign Server")
    print("  Pathfinder 2nd Edition")
    print("=" * 50)
    print()
    print("Starting server at http://localhost:8000")
    print("API docs at http://localhost:8000/docs")
    print()
    print("Press Ctrl+C to stop")
    print()

    uvicorn.run(
        "pathkeeper.web.server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
