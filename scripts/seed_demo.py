import argparse
import os

from dotenv import load_dotenv

from shopchat.config import DEFAULT_CATALOG_PATH, DEMO_CHATBOT_ID, DEMO_WORKSPACE_ID
from shopchat.db import SqlConversationLog, SqlProductStore, init_db, make_engine
from shopchat.models import Chatbot
from shopchat.product_loader import load_catalog


def main():
    load_dotenv()
    parser = argparse.ArgumentParser(description="Load the demo catalog and chatbot into a database")
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL"), help="SQLAlchemy database URL")
    parser.add_argument("--catalog", default=os.environ.get("CATALOG_PATH", DEFAULT_CATALOG_PATH), help="Catalog JSON path")
    args = parser.parse_args()

    if not args.database_url:
        parser.error("DATABASE_URL is not set; pass --database-url")

    engine = make_engine(args.database_url)
    init_db(engine)
    count = SqlProductStore(engine).add_products(load_catalog(args.catalog))
    SqlConversationLog(engine).add_chatbot(
        Chatbot(id=DEMO_CHATBOT_ID, workspace_id=DEMO_WORKSPACE_ID, name="Demo shop assistant")
    )
    print(f"Seeded {count} products and chatbot {DEMO_CHATBOT_ID} into {args.database_url}")


if __name__ == "__main__":
    main()
