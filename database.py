from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import update
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)


def compare_and_set(model, criteria, values):
    """Conditional UPDATE; True when exactly one row matched ``criteria``.

    The guard lives in the WHERE clause so two racing writers cannot both
    see the old state. The caller owns the surrounding transaction.
    """
    result = db.session.execute(
        update(model)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
