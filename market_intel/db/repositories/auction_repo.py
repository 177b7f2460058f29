import sqlite3
import uuid
from datetime import datetime
from typing import Callable, Optional

from market_intel.db.connection import Database
from market_intel.errors import DuplicateBid, InvalidTransition
from market_intel.models.auction import AuctionBid, LoadAuction
from market_intel.models.enums import AuctionStatus, BidStatus
from market_intel.utils.dates import parse_dt, to_iso

_AUCTION_TIMES = (
    "start_time",
    "end_time",
    "actual_start_time",
    "actual_end_time",
    "created_at",
    "updated_at",
)

_AUCTION_IS_ACTIVE = (
    "EXISTS (SELECT 1 FROM auctions a WHERE a.auction_id = "
    "auction_bids.auction_id AND a.status = 'ACTIVE')"
)

# Given the auction and its ACTIVE bids, returns fresh scores and the winner.
WinnerSelector = Callable[
    [LoadAuction, list[AuctionBid]], tuple[dict[str, float], Optional[str]]
]


def _row_to_auction(row: sqlite3.Row) -> LoadAuction:
    data = dict(row)
    for key in _AUCTION_TIMES:
        if data.get(key):
            data[key] = parse_dt(data[key])
    return LoadAuction(**data)


def _row_to_bid(row: sqlite3.Row) -> AuctionBid:
    data = dict(row)
    data["created_at"] = parse_dt(data["created_at"])
    data["updated_at"] = parse_dt(data["updated_at"])
    return AuctionBid(**data)


def _statuses(values) -> tuple[str, list[str]]:
    vals = [AuctionStatus(v).value for v in values]
    return ",".join("?" * len(vals)), vals


class AuctionRepository:
    def __init__(self, db: Database):
        self.db = db

    # ── Auctions ─────────────────────────────────────

    def insert_auction(self, auction: dict) -> LoadAuction:
        auction_id = auction.get("auction_id") or f"AUC-{uuid.uuid4().hex[:10]}"
        with self.db.get_db() as conn:
            conn.execute(
                """INSERT INTO auctions
                   (auction_id, load_id, title, description, auction_type,
                    status, start_time, end_time, starting_price,
                    reserve_price, current_price, min_bid_increment,
                    network_efficiency_weight, price_weight,
                    driver_score_weight, bids_count, created_by,
                    created_at, updated_at)
                   VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,0,?,?,?)""",
                (
                    auction_id,
                    auction["load_id"],
                    auction["title"],
                    auction.get("description", ""),
                    auction["auction_type"],
                    auction["status"],
                    to_iso(auction["start_time"]),
                    to_iso(auction["end_time"]),
                    auction["starting_price"],
                    auction.get("reserve_price"),
                    auction["starting_price"],
                    auction.get("min_bid_increment", 0.0),
                    auction["network_efficiency_weight"],
                    auction["price_weight"],
                    auction["driver_score_weight"],
                    auction.get("created_by"),
                    to_iso(auction["created_at"]),
                    to_iso(auction["created_at"]),
                ),
            )
        return self.get_auction(auction_id)

    def get_auction(self, auction_id: str) -> Optional[LoadAuction]:
        with self.db.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM auctions WHERE auction_id = ?", (auction_id,)
            ).fetchone()
        return _row_to_auction(row) if row else None

    def query_auctions(
        self,
        status: Optional[AuctionStatus] = None,
        load_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[LoadAuction], int]:
        clauses: list[str] = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(AuctionStatus(status).value)
        if load_id:
            clauses.append("load_id = ?")
            params.append(load_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.db.get_db() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM auctions {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""SELECT * FROM auctions {where}
                    ORDER BY created_at DESC LIMIT ? OFFSET ?""",
                [*params, limit, (page - 1) * limit],
            ).fetchall()
        return [_row_to_auction(r) for r in rows], total

    def transition(
        self,
        auction_id: str,
        from_statuses,
        to_status: AuctionStatus,
        now: datetime,
        **fields,
    ) -> bool:
        """Conditional status change; False when the auction was not in
        one of ``from_statuses`` (or does not exist)."""
        marks, vals = _statuses(from_statuses)
        sets = ["status = ?", "updated_at = ?"]
        params: list = [AuctionStatus(to_status).value, to_iso(now)]
        for key, value in fields.items():
            sets.append(f"{key} = ?")
            params.append(to_iso(value) if isinstance(value, datetime) else value)
        with self.db.get_db() as conn:
            cur = conn.execute(
                f"""UPDATE auctions SET {', '.join(sets)}
                    WHERE auction_id = ? AND status IN ({marks})""",
                [*params, auction_id, *vals],
            )
            return cur.rowcount > 0

    def update_auction(
        self,
        auction_id: str,
        from_statuses,
        changes: dict,
        now: datetime,
        validate: Callable[[LoadAuction], None],
    ) -> bool:
        """
        Apply ``changes`` while the auction is in one of ``from_statuses``.
        ``validate`` sees the edited auction before anything is written and
        may raise to abort. A new starting price also resets current_price.
        """
        marks, vals = _statuses(from_statuses)
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT * FROM auctions WHERE auction_id = ? AND status IN ({marks})",
                [auction_id, *vals],
            ).fetchone()
            if row is None:
                return False
            validate(_row_to_auction(row).model_copy(update=changes))

            fields = dict(changes)
            if "starting_price" in fields:
                fields["current_price"] = fields["starting_price"]
            fields["updated_at"] = now
            sets = ", ".join(f"{key} = ?" for key in fields)
            conn.execute(
                f"UPDATE auctions SET {sets} WHERE auction_id = ?",
                [
                    *(
                        to_iso(v) if isinstance(v, datetime) else v
                        for v in fields.values()
                    ),
                    auction_id,
                ],
            )
        return True

    def complete_auction(
        self, auction_id: str, now: datetime, select_winner: WinnerSelector
    ) -> bool:
        """
        ACTIVE -> COMPLETED with winner selection, all in one write
        transaction. Returns False when the auction was no longer ACTIVE,
        in which case nothing is written.
        """
        stamp = to_iso(now)
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM auctions WHERE auction_id = ? AND status = 'ACTIVE'",
                (auction_id,),
            ).fetchone()
            if row is None:
                return False
            auction = _row_to_auction(row)
            bids = [
                _row_to_bid(r)
                for r in conn.execute(
                    "SELECT * FROM auction_bids WHERE auction_id = ? "
                    "AND status = 'ACTIVE'",
                    (auction_id,),
                ).fetchall()
            ]
            scores, winner_id = select_winner(auction, bids)

            for bid_id, score in scores.items():
                conn.execute(
                    "UPDATE auction_bids SET weighted_score = ?, updated_at = ? "
                    "WHERE bid_id = ?",
                    (score, stamp, bid_id),
                )

            winning_amount = auction.current_price
            if winner_id is not None:
                conn.execute(
                    "UPDATE auction_bids SET status = 'ACCEPTED', updated_at = ? "
                    "WHERE bid_id = ?",
                    (stamp, winner_id),
                )
                winning_amount = next(
                    b.amount for b in bids if b.bid_id == winner_id
                )
            conn.execute(
                """UPDATE auction_bids SET status = 'REJECTED', updated_at = ?
                   WHERE auction_id = ? AND status IN ('PENDING', 'ACTIVE')""",
                (stamp, auction_id),
            )
            conn.execute(
                """UPDATE auctions
                   SET status = 'COMPLETED', actual_end_time = ?,
                       winning_bid_id = ?, current_price = ?, updated_at = ?
                   WHERE auction_id = ?""",
                (stamp, winner_id, winning_amount, stamp, auction_id),
            )
        return True

    # ── Bids ─────────────────────────────────────────

    def insert_bid(self, bid: dict) -> AuctionBid:
        """
        Insert a bid and bump the auction's bid count together.

        Raises DuplicateBid when the bidder already bid on the auction and
        InvalidTransition when the auction is not ACTIVE at write time.
        """
        bid_id = bid.get("bid_id") or f"BID-{uuid.uuid4().hex[:10]}"
        stamp = to_iso(bid["created_at"])
        with self.db.transaction() as conn:
            try:
                conn.execute(
                    """INSERT INTO auction_bids
                       (bid_id, auction_id, load_id, bidder_id, bidder_type,
                        amount, status, efficiency_score,
                        network_contribution_score, driver_score,
                        weighted_score, notes, created_at, updated_at)
                       VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                    (
                        bid_id,
                        bid["auction_id"],
                        bid["load_id"],
                        bid["bidder_id"],
                        bid["bidder_type"],
                        bid["amount"],
                        bid["status"],
                        bid["efficiency_score"],
                        bid["network_contribution_score"],
                        bid.get("driver_score", 0.0),
                        bid["weighted_score"],
                        bid.get("notes", ""),
                        stamp,
                        stamp,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateBid(
                    f"Bidder {bid['bidder_id']} already bid on "
                    f"auction {bid['auction_id']}"
                ) from exc
            cur = conn.execute(
                """UPDATE auctions
                   SET bids_count = bids_count + 1, updated_at = ?
                   WHERE auction_id = ? AND status = 'ACTIVE'""",
                (stamp, bid["auction_id"]),
            )
            if cur.rowcount == 0:
                raise InvalidTransition(
                    f"Auction {bid['auction_id']} is not accepting bids"
                )
        return self.get_bid(bid_id)

    def get_bid(self, bid_id: str) -> Optional[AuctionBid]:
        with self.db.get_db() as conn:
            row = conn.execute(
                "SELECT * FROM auction_bids WHERE bid_id = ?", (bid_id,)
            ).fetchone()
        return _row_to_bid(row) if row else None

    def get_bids(
        self, auction_id: str, status: Optional[BidStatus] = None
    ) -> list[AuctionBid]:
        sql = "SELECT * FROM auction_bids WHERE auction_id = ?"
        params: list = [auction_id]
        if status:
            sql += " AND status = ?"
            params.append(BidStatus(status).value)
        with self.db.get_db() as conn:
            rows = conn.execute(sql + " ORDER BY created_at ASC", params).fetchall()
        return [_row_to_bid(r) for r in rows]

    def get_bids_by_bidder(self, bidder_id: str) -> list[AuctionBid]:
        with self.db.get_db() as conn:
            rows = conn.execute(
                "SELECT * FROM auction_bids WHERE bidder_id = ? "
                "ORDER BY created_at DESC",
                (bidder_id,),
            ).fetchall()
        return [_row_to_bid(r) for r in rows]

    def update_bid(
        self,
        bid_id: str,
        now: datetime,
        from_statuses: Optional[list[BidStatus]] = None,
        **fields,
    ) -> bool:
        """Update a bid while its auction is ACTIVE (and, when given, the bid
        is in one of ``from_statuses``). False when nothing matched."""
        sets = ["updated_at = ?"]
        params: list = [to_iso(now)]
        for key, value in fields.items():
            sets.append(f"{key} = ?")
            params.append(value.value if isinstance(value, BidStatus) else value)
        where = f"bid_id = ? AND {_AUCTION_IS_ACTIVE}"
        params.append(bid_id)
        if from_statuses:
            where += f" AND status IN ({','.join('?' * len(from_statuses))})"
            params.extend(BidStatus(s).value for s in from_statuses)
        with self.db.get_db() as conn:
            cur = conn.execute(
                f"UPDATE auction_bids SET {', '.join(sets)} WHERE {where}",
                params,
            )
            return cur.rowcount > 0

    def withdraw_bid(self, bid_id: str, now: datetime) -> bool:
        """Withdraw and decrement the bid count (floored at 0) together."""
        stamp = to_iso(now)
        with self.db.transaction() as conn:
            cur = conn.execute(
                f"""UPDATE auction_bids SET status = 'WITHDRAWN', updated_at = ?
                    WHERE bid_id = ? AND status IN ('PENDING', 'ACTIVE')
                    AND {_AUCTION_IS_ACTIVE}""",
                (stamp, bid_id),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                """UPDATE auctions
                   SET bids_count = MAX(bids_count - 1, 0), updated_at = ?
                   WHERE auction_id =
                       (SELECT auction_id FROM auction_bids WHERE bid_id = ?)""",
                (stamp, bid_id),
            )
        return True
