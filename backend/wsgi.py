# backend/wsgi.py
from ceramerp import create_app

app = create_app()
