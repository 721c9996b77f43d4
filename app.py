import os
from dotenv import load_dotenv
import uvicorn

load_dotenv()

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8080))  # console listens beside the engine
    ip = os.getenv("IP", "127.0.0.1")
    uvicorn.run("server:app", host=ip, port=port, reload=True)
