from invoicing import create_app

app = create_app()
