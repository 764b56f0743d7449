"""
Table repositories.

Each repository wraps the statements for one table and hands back ORM rows.
They add and flush but never commit: the caller owns the transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from errors import Conflict, InvalidState, NotFound, ValidationError
from models import Account, CartLine, Category, CategoryImage, Favorite, Order, OrderLine, Rating
from schemas import (
    MAX_LINE_QUANTITY,
    Address,
    CategoryChanges,
    CategoryDraft,
    CategoryFilters,
    OrderStatus,
    PaymentStatus,
    Role,
)

logger = logging.getLogger(__name__)


def _dialect_insert(db: Session, table):
    """INSERT construct with ON CONFLICT support where the dialect has it."""
    name = db.get_bind().dialect.name
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert
        return sqlite_insert(table)
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert
        return pg_insert(table)
    return None


class AccountRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: int) -> Optional[Account]:
        return self.db.get(Account, account_id)

    def find_by_email(self, email: str) -> Optional[Account]:
        return self.db.scalar(select(Account).where(Account.email == email))

    def create(self, name: str, email: str, password_hash: str, role: str = Role.user.value,
               address: Optional[Address] = None) -> Account:
        if self.find_by_email(email) is not None:
            raise Conflict("User already exists")
        account = Account(name=name, email=email, password_hash=password_hash, role=role)
        if address is not None:
            for field, value in address.model_dump().items():
                setattr(account, field, value)
        self.db.add(account)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent registration
            raise Conflict("User already exists")
        logger.debug(f"Created account {account.id} for {email}")
        return account

    def update_address(self, account_id: int, address: Address) -> Account:
        account = self.get(account_id)
        if account is None:
            raise NotFound("User not found")
        for field, value in address.model_dump().items():
            setattr(account, field, value)
        self.db.flush()
        return account


class CategoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, category_id: int) -> Optional[Category]:
        return self.db.scalar(
            select(Category).options(selectinload(Category.images)).where(Category.id == category_id)
        )

    def get_many(self, category_ids) -> Dict[int, Category]:
        ids = set(category_ids)
        if not ids:
            return {}
        rows = self.db.scalars(
            select(Category).options(selectinload(Category.images)).where(Category.id.in_(ids))
        )
        return {row.id: row for row in rows}

    def exists(self, category_id: int) -> bool:
        return self.db.scalar(select(Category.id).where(Category.id == category_id)) is not None

    def price_of(self, category_id: int) -> Optional[float]:
        return self.db.scalar(select(Category.price).where(Category.id == category_id))

    def find_id_by_name(self, name: str) -> Optional[int]:
        return self.db.scalar(select(Category.id).where(Category.name == name).order_by(Category.id).limit(1))

    def create(self, draft: CategoryDraft) -> List[int]:
        """One row per size; a draft without sizes yields a single row."""
        ids = []
        for size in draft.sizes or [None]:
            category = Category(
                name=draft.name,
                price=draft.price,
                size=size,
                material=draft.material,
                color=draft.color,
                description=draft.description,
            )
            category.images = self._images(draft.image_urls)
            self.db.add(category)
            self.db.flush()
            ids.append(category.id)
        logger.debug(f"Created catalog rows {ids} for {draft.name!r}")
        return ids

    def _filtered(self, stmt, filters: CategoryFilters):
        if filters.name:
            stmt = stmt.where(Category.name.like(f"%{filters.name}%"))
        if filters.min_price is not None:
            stmt = stmt.where(Category.price >= filters.min_price)
        if filters.max_price is not None:
            stmt = stmt.where(Category.price <= filters.max_price)
        if filters.size:
            stmt = stmt.where(Category.size == filters.size)
        if filters.material:
            stmt = stmt.where(Category.material == filters.material)
        if filters.color:
            stmt = stmt.where(Category.color == filters.color)
        return stmt

    def search(self, filters: CategoryFilters) -> Tuple[List[Category], int]:
        stmt = self._filtered(select(Category).options(selectinload(Category.images)), filters)
        stmt = stmt.order_by(Category.created_at.desc(), Category.id.desc()).limit(filters.limit).offset(filters.offset)
        rows = list(self.db.scalars(stmt))
        total = self.db.scalar(self._filtered(select(func.count(Category.id)), filters))
        return rows, total or 0

    def by_name(self, name: str) -> List[Category]:
        stmt = (
            select(Category)
            .options(selectinload(Category.images))
            .where(Category.name == name)
            .order_by(Category.created_at.desc(), Category.id.desc())
        )
        return list(self.db.scalars(stmt))

    def grouped(self) -> Dict[str, List[Category]]:
        """Rows bucketed by their exact name, newest first within each bucket."""
        stmt = select(Category).options(selectinload(Category.images)).order_by(
            Category.created_at.desc(), Category.id.desc()
        )
        groups: Dict[str, List[Category]] = {}
        for row in self.db.scalars(stmt):
            groups.setdefault(row.name, []).append(row)
        return groups

    def update(self, category_id: int, changes: CategoryChanges) -> Category:
        category = self.get(category_id)
        if category is None:
            raise NotFound("Category not found")
        values = changes.model_dump(exclude_unset=True)
        image_urls = values.pop("image_urls", None)
        for field, value in values.items():
            setattr(category, field, value)
        if "image_urls" in changes.model_fields_set:
            # Replace wholesale; delete-orphan drops the old rows
            category.images = self._images(image_urls or [])
        self.db.flush()
        logger.debug(f"Updated catalog row {category_id}: {sorted(changes.model_fields_set)}")
        return category

    def delete(self, category_id: int) -> bool:
        result = self.db.execute(delete(Category).where(Category.id == category_id))
        return result.rowcount > 0

    @staticmethod
    def _images(urls):
        return [CategoryImage(image_url=url, position=i) for i, url in enumerate(urls)]


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_line(self, line_id: int) -> Optional[CartLine]:
        return self.db.get(CartLine, line_id)

    def lines_for(self, account_id: int) -> List[CartLine]:
        stmt = select(CartLine).where(CartLine.account_id == account_id).order_by(CartLine.id)
        return list(self.db.scalars(stmt))

    def add_line(self, account_id: int, category_id: int, quantity: int = 1) -> int:
        """Insert a line or add `quantity` to the existing one; returns the line id."""
        if not CategoryRepository(self.db).exists(category_id):
            raise NotFound("Category not found")

        now = datetime.now(timezone.utc)
        table = CartLine.__table__
        stmt = _dialect_insert(self.db, table)
        if stmt is not None:
            stmt = stmt.values(
                account_id=account_id, category_id=category_id, quantity=quantity,
                created_at=now, updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.account_id, table.c.category_id],
                set_={"quantity": table.c.quantity + stmt.excluded.quantity, "updated_at": now},
                where=table.c.quantity + stmt.excluded.quantity <= MAX_LINE_QUANTITY,
            ).returning(table.c.id)
            line_id = self.db.execute(stmt).scalar_one_or_none()
            if line_id is None:
                raise ValidationError(f"Quantity must not exceed {MAX_LINE_QUANTITY}")
        else:
            line_id = self._merge_or_insert(account_id, category_id, quantity, now)
        logger.debug(f"Cart line {line_id}: account {account_id} +{quantity} of category {category_id}")
        return line_id

    def _merge_or_insert(self, account_id, category_id, quantity, now):
        owned = (CartLine.account_id == account_id, CartLine.category_id == category_id)
        result = self.db.execute(
            update(CartLine)
            .where(*owned, CartLine.quantity + quantity <= MAX_LINE_QUANTITY)
            .values(quantity=CartLine.quantity + quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        line_id = self.db.scalar(select(CartLine.id).where(*owned))
        if result.rowcount == 0:
            if line_id is not None:
                raise ValidationError(f"Quantity must not exceed {MAX_LINE_QUANTITY}")
            result = self.db.execute(
                insert(CartLine.__table__).values(
                    account_id=account_id, category_id=category_id, quantity=quantity,
                    created_at=now, updated_at=now,
                )
            )
            return result.inserted_primary_key[0]
        return line_id

    def set_quantity(self, line_id: int, quantity: int) -> bool:
        """Set a line's quantity; zero or less removes the line. False if no such line."""
        if quantity <= 0:
            return self.remove(line_id)
        result = self.db.execute(
            update(CartLine)
            .where(CartLine.id == line_id)
            .values(quantity=quantity, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount > 0

    def set_quantity_by_category(self, account_id: int, category_id: int, quantity: int) -> bool:
        if quantity <= 0:
            return self.remove_by_category(account_id, category_id)
        result = self.db.execute(
            update(CartLine)
            .where(CartLine.account_id == account_id, CartLine.category_id == category_id)
            .values(quantity=quantity, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount > 0

    def remove(self, line_id: int) -> bool:
        result = self.db.execute(delete(CartLine).where(CartLine.id == line_id))
        return result.rowcount > 0

    def remove_by_category(self, account_id: int, category_id: int) -> bool:
        result = self.db.execute(
            delete(CartLine).where(CartLine.account_id == account_id, CartLine.category_id == category_id)
        )
        return result.rowcount > 0

    def remove_exact(self, line: CartLine) -> bool:
        """Delete a line only if its quantity is still what the caller read."""
        result = self.db.execute(
            delete(CartLine).where(CartLine.id == line.id, CartLine.quantity == line.quantity)
        )
        return result.rowcount == 1

    def clear(self, account_id: int) -> int:
        result = self.db.execute(delete(CartLine).where(CartLine.account_id == account_id))
        return result.rowcount

    def item_count(self, account_id: int) -> int:
        total = self.db.scalar(select(func.sum(CartLine.quantity)).where(CartLine.account_id == account_id))
        return int(total or 0)

    def get_cart(self, account_id: int) -> List[CartLine]:
        """Lines with their catalog rows loaded, newest first."""
        stmt = (
            select(CartLine)
            .options(selectinload(CartLine.category).selectinload(Category.images))
            .where(CartLine.account_id == account_id)
            .order_by(CartLine.created_at.desc(), CartLine.id.desc())
        )
        return list(self.db.scalars(stmt))


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, account_id: int, total_amount: float, payment_method: str, shipping: dict) -> Order:
        order = Order(
            account_id=account_id,
            total_amount=total_amount,
            payment_method=payment_method,
            status=OrderStatus.pending.value,
            payment_status=PaymentStatus.pending.value,
            **shipping,
        )
        self.db.add(order)
        self.db.flush()
        return order

    def add_line(self, order: Order, category_id: int, quantity: int, price: float) -> OrderLine:
        line = OrderLine(order_id=order.id, category_id=category_id, quantity=quantity, price=price)
        self.db.add(line)
        self.db.flush()
        return line

    def get(self, order_id: int) -> Optional[Order]:
        return self.db.scalar(select(Order).options(selectinload(Order.lines)).where(Order.id == order_id))

    def get_owned(self, order_id: int, account_id: int) -> Order:
        """The order, if it exists and belongs to the account; NotFound otherwise."""
        order = self.get(order_id)
        if order is None or order.account_id != account_id:
            raise NotFound("Order not found")
        return order

    def list_for(self, account_id: int) -> List[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.lines))
            .where(Order.account_id == account_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(self.db.scalars(stmt))

    def set_payment_status(self, order: Order, payment_status: str, status: Optional[str] = None):
        order.payment_status = payment_status
        if status is not None:
            order.status = status
        self.db.flush()

    def cancel(self, order: Order) -> Order:
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.pending.value)
            .values(status=OrderStatus.cancelled.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidState("Order cannot be cancelled at this stage")
        self.db.refresh(order)
        return order


class FavoriteRepository:
    def __init__(self, db: Session):
        self.db = db

    def find(self, account_id: int, category_id: int) -> Optional[Favorite]:
        return self.db.scalar(
            select(Favorite).where(Favorite.account_id == account_id, Favorite.category_id == category_id)
        )

    def is_favorited(self, account_id: int, category_id: int) -> bool:
        return self.find(account_id, category_id) is not None

    def add(self, account_id: int, category_id: int) -> Favorite:
        if not CategoryRepository(self.db).exists(category_id):
            raise NotFound("Category not found")
        if self.find(account_id, category_id) is not None:
            raise Conflict("Category is already in favorites")
        favorite = Favorite(account_id=account_id, category_id=category_id)
        self.db.add(favorite)
        try:
            self.db.flush()
        except IntegrityError:
            raise Conflict("Category is already in favorites")
        return favorite

    def remove(self, account_id: int, category_id: int) -> bool:
        result = self.db.execute(
            delete(Favorite).where(Favorite.account_id == account_id, Favorite.category_id == category_id)
        )
        return result.rowcount > 0

    def toggle(self, account_id: int, category_id: int) -> Optional[Favorite]:
        """Remove the favorite if present, else add it. Returns the new row or None when removed."""
        if self.remove(account_id, category_id):
            return None
        return self.add(account_id, category_id)

    def list_for(self, account_id: int) -> List[Favorite]:
        stmt = (
            select(Favorite)
            .options(selectinload(Favorite.category).selectinload(Category.images))
            .where(Favorite.account_id == account_id)
            .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        )
        return list(self.db.scalars(stmt))


class RatingRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, rating_id: int) -> Optional[Rating]:
        return self.db.get(Rating, rating_id)

    def create(self, account_id: int, category_id: int, rating: int, review: Optional[str]) -> Rating:
        if not CategoryRepository(self.db).exists(category_id):
            raise NotFound("Category not found")
        row = Rating(account_id=account_id, category_id=category_id, rating=rating, review=review)
        self.db.add(row)
        self.db.flush()
        return row

    def update(self, row: Rating, rating: int, review: Optional[str]) -> Rating:
        row.rating = rating
        row.review = review
        self.db.flush()
        return row

    def delete(self, row: Rating):
        self.db.delete(row)
        self.db.flush()

    def _listing(self):
        return (
            select(Rating)
            .options(selectinload(Rating.account))
            .order_by(Rating.created_at.desc(), Rating.id.desc())
        )

    def by_category(self, category_id: int) -> List[Rating]:
        return list(self.db.scalars(self._listing().where(Rating.category_id == category_id)))

    def by_account_and_category(self, account_id: int, category_id: int) -> List[Rating]:
        stmt = self._listing().where(Rating.account_id == account_id, Rating.category_id == category_id)
        return list(self.db.scalars(stmt))

    def statistics(self, category_id: int) -> dict:
        average, total = self.db.execute(
            select(func.avg(Rating.rating), func.count(Rating.id)).where(Rating.category_id == category_id)
        ).one()
        return {
            "averageRating": round(float(average), 2) if average is not None else 0,
            "totalRatings": total or 0,
        }
