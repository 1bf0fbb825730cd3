from sheetvault.cli import app

app()
