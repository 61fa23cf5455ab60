from app.collabdoc import create_app

app = create_app()
