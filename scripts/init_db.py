from pinguard.config import load_config
from pinguard.storage import connect, init_db


def main():
    cfg = load_config("config.yaml")
    conn = connect(cfg.storage.db_path)
    try:
        init_db(conn)
    finally:
        conn.close()
    print(f"DB initialized: {cfg.storage.db_path}")


if __name__ == "__main__":
    main()
