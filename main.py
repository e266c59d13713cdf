# Entrypoint for the HMRC RTI service.
from hmrc_rti import create_app

app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8000, debug=False, use_reloader=False)
