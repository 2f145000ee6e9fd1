from datetime import date

from retail_stock.models.batch import BatchStatus
from retail_stock.services import batch_service, product_stock


def test_totals_sum_active_batches_only(db, make_product, make_batch):
    product = make_product()
    make_batch(product, on_hand=6, on_shelf=4)
    make_batch(product, on_shelf=3)
    expired = make_batch(product, expiry_date=date(2030, 1, 1), on_hand=9)
    expired.status = BatchStatus.EXPIRED
    db.commit()

    stock = product_stock.get_product_stock(db, product.id)

    assert (stock.quantity_on_hand, stock.quantity_on_shelf) == (6, 7)
    assert stock.total_quantity == 13
    assert stock.active_batches == 2
    assert not stock.needs_reorder
    assert stock.is_low_stock


def test_product_without_batches_is_out_of_stock(db, make_product):
    product = make_product()

    stock = product_stock.get_product_stock(db, product.id)

    assert stock.total_quantity == 0
    assert stock.active_batches == 0
    assert stock.is_out_of_stock
    assert stock.needs_reorder
    assert not stock.is_low_stock


def test_unknown_product(db):
    assert product_stock.get_product_stock(db, "missing") is None


def test_restock_listing_follows_reorder_points(db, make_product, make_batch):
    empty = make_product("Yeast")
    low = make_product("Flour")
    stocked = make_product("Salt")
    make_batch(low, on_shelf=8)
    make_batch(stocked, on_hand=30)

    assert [s.product_id for s in product_stock.list_restock_needed(db)] == [empty.id, low.id]

    product_stock.set_reorder_point(db, low.id, 5)
    assert [s.product_id for s in product_stock.list_restock_needed(db)] == [empty.id]


def test_disposed_stock_counts_toward_restock(db, make_product, make_batch):
    product = make_product()
    batch = make_batch(product, on_hand=50)
    assert not product_stock.get_product_stock(db, product.id).needs_reorder

    batch_service.dispose_batch(db, batch.id, reason="Water damage")

    assert product_stock.get_product_stock(db, product.id).needs_reorder
