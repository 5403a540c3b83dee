"""Application entry point.

Runs the FastAPI application with uvicorn.
"""

import uvicorn

if __name__ == "__main__":
    uvicorn.run("app.main:app", host="localhost", port=8000, reload=True)
