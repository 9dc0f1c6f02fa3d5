import os

import uvicorn


def main():
    uvicorn.run(
        "laterlist.main:app",
        host=os.environ.get("LATERLIST_HOST", "127.0.0.1"),
        port=int(os.environ.get("LATERLIST_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
