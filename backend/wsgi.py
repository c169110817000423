# backend/wsgi.py
from jobbudget import create_app

app = create_app()
