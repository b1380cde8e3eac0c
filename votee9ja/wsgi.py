# votee9ja/wsgi.py
# Entry point for WSGI servers and `flask --app votee9ja.wsgi run`.

from votee9ja import create_app

app = create_app()
