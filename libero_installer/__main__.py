# libero_installer/__main__.py
from libero_installer.cli import app


def main():
    """
    Main application
    """
    app(prog_name="libero-installer")


if __name__ == "__main__":
    main()
