# backend/wsgi.py
from ludocompta import create_app

app = create_app()
