from bookshelf.main import app

app(prog_name="bookshelf")
