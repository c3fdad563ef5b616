from app.lodgeflow import create_app

app = create_app()
