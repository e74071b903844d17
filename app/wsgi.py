from app.bdgenai import create_app

app = create_app()
