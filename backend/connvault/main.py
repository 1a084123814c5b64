from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from connvault.api import router

app = FastAPI(title="connvault")

# Requests come from the desktop webview, whose origin varies per platform
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")

@app.get("/")
def liveness():
    # Polled by the shell before it unlocks or loads connections
    return {"status": "connvault running"}
