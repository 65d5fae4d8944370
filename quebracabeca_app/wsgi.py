# quebracabeca_app/wsgi.py
# -*- coding: utf-8 -*-
from quebracabeca_app import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
