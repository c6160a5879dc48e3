from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List
import uuid

from sqlalchemy.orm import Session

from models.mysql_models import User, Server, Transaction
from models.schemas import TransactionType
from services.exceptions import ServerNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class ServerSnapshot:
    id: str
    user_id: str
    pterodactyl_id: int
    name: str
    ram: int
    cpu: int
    disk: int
    paused: bool
    next_billing_at: Optional[datetime]
    last_billed_at: Optional[datetime] = None
    databases: int = 0
    backups: int = 0
    allocations: int = 0

    @classmethod
    def from_row(cls, server: Server) -> "ServerSnapshot":
        return cls(
            id=server.id,
            user_id=server.user_id,
            pterodactyl_id=server.pterodactyl_id,
            name=server.name,
            ram=server.ram,
            cpu=server.cpu,
            disk=server.disk,
            paused=bool(server.paused),
            next_billing_at=server.next_billing_at,
            last_billed_at=server.last_billed_at,
            databases=server.databases,
            backups=server.backups,
            allocations=server.allocations
        )


class LedgerService:
    """Coin balances, billing windows and the transaction log.

    Every method that moves coins commits or rolls back as one unit.
    """

    def __init__(self, mysql_session: Session):
        self.mysql_session = mysql_session

    def _generate_id(self) -> str:
        return str(uuid.uuid4())

    def _add_transaction(
        self,
        user_id: str,
        amount: int,
        tx_type: TransactionType,
        description: str,
        now: Optional[datetime] = None
    ) -> Transaction:
        tx = Transaction(
            id=self._generate_id(),
            user_id=user_id,
            type=tx_type.value,
            amount=amount,
            description=description,
            created_at=now or utcnow()
        )
        self.mysql_session.add(tx)
        return tx

    def create_user(
        self,
        username: str,
        email: Optional[str] = None,
        pterodactyl_id: Optional[int] = None,
        coins: int = 0,
        server_limit: int = 1,
        databases: int = 1,
        backups: int = 1,
        allocations: int = 1
    ) -> dict:
        user = User(
            id=self._generate_id(),
            username=username,
            email=email,
            pterodactyl_id=pterodactyl_id,
            coins=coins,
            server_limit=server_limit,
            databases=databases,
            backups=backups,
            allocations=allocations
        )
        self.mysql_session.add(user)
        self.mysql_session.commit()
        return self._user_to_dict(user)

    def get_user(self, user_id: str) -> Optional[dict]:
        user = self.mysql_session.query(User).filter(User.id == user_id).first()
        if not user:
            return None
        return self._user_to_dict(user)

    def get_user_by_username(self, username: str) -> Optional[dict]:
        user = self.mysql_session.query(User).filter(User.username == username).first()
        if not user:
            return None
        return self._user_to_dict(user)

    def get_balance(self, user_id: str) -> Optional[int]:
        row = self.mysql_session.query(User.coins).filter(User.id == user_id).first()
        if row is None:
            return None
        return int(row[0])

    def add_credit(
        self,
        user_id: str,
        amount: int,
        tx_type: TransactionType,
        description: str
    ) -> Optional[dict]:
        try:
            updated = self.mysql_session.query(User).filter(User.id == user_id).update(
                {User.coins: User.coins + amount},
                synchronize_session=False
            )
            if not updated:
                self.mysql_session.rollback()
                return None
            tx = self._add_transaction(user_id, amount, tx_type, description)
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

        return {
            "tx_id": tx.id,
            "amount": amount,
            "balance_after": self.get_balance(user_id),
            "type": tx_type.value,
            "description": description
        }

    def get_transaction_history(self, user_id: str, limit: int = 100) -> Optional[dict]:
        if self.get_balance(user_id) is None:
            return None

        transactions = self.mysql_session.query(Transaction).filter(
            Transaction.user_id == user_id
        ).order_by(Transaction.created_at.desc()).limit(limit).all()

        return {
            "user_id": user_id,
            "transactions": [
                {
                    "id": tx.id,
                    "type": tx.type,
                    "amount": tx.amount,
                    "description": tx.description,
                    "created_at": tx.created_at
                }
                for tx in transactions
            ]
        }

    def get_server(self, server_id: str, user_id: Optional[str] = None) -> Optional[Server]:
        query = self.mysql_session.query(Server).filter(Server.id == server_id)
        if user_id is not None:
            query = query.filter(Server.user_id == user_id)
        return query.first()

    def get_server_snapshot(self, server_id: str, user_id: Optional[str] = None) -> Optional[ServerSnapshot]:
        server = self.get_server(server_id, user_id)
        if not server:
            return None
        return ServerSnapshot.from_row(server)

    def find_servers_due_for_billing(self, now: datetime) -> List[ServerSnapshot]:
        servers = self.mysql_session.query(Server).filter(
            Server.paused.is_(False),
            Server.next_billing_at.isnot(None),
            Server.next_billing_at <= now
        ).order_by(Server.next_billing_at).all()

        return [ServerSnapshot.from_row(s) for s in servers]

    def charge_and_extend(
        self,
        user_id: str,
        server_id: str,
        amount: int,
        now: datetime,
        next_billing_at: datetime,
        description: str
    ) -> bool:
        """Deduct ``amount``, advance the billing window and log the charge.

        Returns False, with nothing written, when the balance is below
        ``amount`` at the moment of the update.
        """
        try:
            if amount > 0:
                updated = self.mysql_session.query(User).filter(
                    User.id == user_id,
                    User.coins >= amount
                ).update({User.coins: User.coins - amount}, synchronize_session=False)
                if not updated:
                    self.mysql_session.rollback()
                    return False

            updated = self.mysql_session.query(Server).filter(Server.id == server_id).update(
                {Server.last_billed_at: now, Server.next_billing_at: next_billing_at},
                synchronize_session=False
            )
            if not updated:
                self.mysql_session.rollback()
                raise ServerNotFoundError()

            if amount > 0:
                self._add_transaction(user_id, -amount, TransactionType.BILLING, description, now)

            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

        return True

    def extend_billing_window(self, server_id: str, next_billing_at: datetime) -> None:
        try:
            updated = self.mysql_session.query(Server).filter(Server.id == server_id).update(
                {Server.next_billing_at: next_billing_at},
                synchronize_session=False
            )
            if not updated:
                self.mysql_session.rollback()
                raise ServerNotFoundError()
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

    def refund_charge(
        self,
        user_id: str,
        server_id: str,
        amount: int,
        description: str,
        now: Optional[datetime] = None,
        last_billed_at: Optional[datetime] = None
    ) -> None:
        """Return a just-taken charge and drop the server's prepaid window.

        ``last_billed_at`` is what the server showed before the refunded
        charge, so the row does not claim a billed hour that was given back.
        """
        try:
            if amount > 0:
                self.mysql_session.query(User).filter(User.id == user_id).update(
                    {User.coins: User.coins + amount},
                    synchronize_session=False
                )
                self._add_transaction(user_id, amount, TransactionType.BILLING, description, now)

            self.mysql_session.query(Server).filter(Server.id == server_id).update(
                {Server.next_billing_at: None, Server.last_billed_at: last_billed_at},
                synchronize_session=False
            )
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

    def mark_paused(self, server_id: str, suspended_at: datetime) -> None:
        try:
            self.mysql_session.query(Server).filter(Server.id == server_id).update(
                {
                    Server.paused: True,
                    Server.next_billing_at: None,
                    Server.suspended_at: suspended_at
                },
                synchronize_session=False
            )
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

    def mark_running(self, server_id: str) -> None:
        try:
            self.mysql_session.query(Server).filter(Server.id == server_id).update(
                {Server.paused: False, Server.suspended_at: None},
                synchronize_session=False
            )
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

    def resize_server(
        self,
        server_id: str,
        ram: int,
        cpu: int,
        disk: int,
        databases: int,
        backups: int,
        allocations: int
    ) -> None:
        # The prepaid window is left alone; the next renewal bills the new size.
        try:
            updated = self.mysql_session.query(Server).filter(Server.id == server_id).update(
                {
                    Server.ram: ram,
                    Server.cpu: cpu,
                    Server.disk: disk,
                    Server.databases: databases,
                    Server.backups: backups,
                    Server.allocations: allocations
                },
                synchronize_session=False
            )
            if not updated:
                self.mysql_session.rollback()
                raise ServerNotFoundError()
            self.mysql_session.commit()
        except Exception:
            self.mysql_session.rollback()
            raise

    def _user_to_dict(self, user: User) -> dict:
        return {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "pterodactyl_id": user.pterodactyl_id,
            "coins": user.coins,
            "server_limit": user.server_limit,
            "databases": user.databases,
            "backups": user.backups,
            "allocations": user.allocations
        }
