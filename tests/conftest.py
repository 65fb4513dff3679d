import os

# Console logging only while testing
os.environ.setdefault("LOG_FILE", "-")
