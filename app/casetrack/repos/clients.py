from sqlalchemy import select

from app.casetrack.db.models import Client, Product


class ClientRepository:
    def __init__(self, db):
        self.db = db

    def get_by_id(self, client_id: str):
        stmt = select(Client).where(Client.id == client_id, Client.deleted_at.is_(None))
        return self.db.execute(stmt).scalars().first()

    def get_product(self, product_id: str | None):
        if product_id is None:
            return None
        return self.db.get(Product, product_id)

    def resolve_organization_id(self, client: Client):
        product = self.get_product(client.product_id)
        if product is None:
            return None
        return product.organization_id
