import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "medcure.main:app",
        host="127.0.0.1",  # local terminal only
        port=8000,
        reload=True,
        log_level="info"
    )
