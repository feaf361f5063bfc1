from datetime import datetime, timezone

from flask_login import UserMixin

from tapwar import db, bcrypt
from tapwar.services.games.constants import LOBBY


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(value):
    """Serialize a stored timestamp; SQLite hands back naive values that are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class Host(UserMixin, db.Model):
    __tablename__ = 'host'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(128), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    nickname = db.Column(db.String(12), nullable=False)
    team = db.Column(db.String(8), nullable=False, index=True)  # RED, BLUE
    joined_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'nickname': self.nickname,
            'team': self.team,
            'joined_at': to_iso(self.joined_at),
        }


class Round(db.Model):
    __tablename__ = 'round'
    id = db.Column(db.Integer, primary_key=True)
    phase = db.Column(db.String(16), nullable=False, default=LOBBY)  # LOBBY, PLAYING, FINISHED
    round_start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    winner = db.Column(db.String(8), nullable=True)  # RED, BLUE, DRAW
    # Bumped on every write; clients drop notifications older than what they hold
    version = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    CANONICAL_ID = 1

    @classmethod
    def current(cls):
        """Return the single shared round row, creating it in LOBBY if missing."""
        row = db.session.get(cls, cls.CANONICAL_ID)
        if row is None:
            row = cls(id=cls.CANONICAL_ID, phase=LOBBY, version=0)
            db.session.add(row)
            db.session.commit()
        return row

    def to_dict(self):
        return {
            'id': self.id,
            'phase': self.phase,
            'round_start_time': to_iso(self.round_start_time),
            'winner': self.winner,
            'version': self.version,
        }
