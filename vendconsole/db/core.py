from tinydb import Query, TinyDB
from tinydb.storages import MemoryStorage

query = Query()


class Database:
    """TinyDB file holding every console table."""

    def __init__(self, path: str = None):
        if path:
            self.db = TinyDB(path)
        else:
            self.db = TinyDB(storage=MemoryStorage)

        self.Machines = self.db.table("machines")
        self.Products = self.db.table("products")
        self.Slots = self.db.table("slots")
        self.MachinePrices = self.db.table("machine_prices")
        self.Sales = self.db.table("sales")

    def close(self):
        self.db.close()


def open_database(path: str = None) -> Database:
    return Database(path)
