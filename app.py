from storefront import create_app

app = create_app()


if __name__ == '__main__':
    # When running with 'flask run' from the command line, Flask reads FLASK_DEBUG instead.
    app.run(debug=True)
