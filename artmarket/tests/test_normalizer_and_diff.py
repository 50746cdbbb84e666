from artmarket.products import PRODUCT_FIELDS, merge_product_changes, normalize_product, sort_products
from artmarket.submissions import diff, flatten_snapshot


def test_normalize_product_fills_canonical_fields():
    product = normalize_product({"name": "Vase"}, 3)
    assert list(product.keys()) == list(PRODUCT_FIELDS)
    assert product["id"].startswith("prod-")
    assert product["id"].endswith("-3")
    assert product["gallery_type"] == "art"
    assert product["category"] == "Artwork"
    assert product["status"] == "active"
    assert product["sort_order"] == 0
    assert product["artist_name"] == ""
    assert product["media_images"] == []
    assert product["owner_user_id"] is None
    assert product["extra_fields"] == {}


def test_normalize_product_handles_non_dict_input():
    product = normalize_product(None)
    assert product["name"] == "Untitled Product"
    assert product["extra_fields"] == {}


def test_normalize_product_is_idempotent():
    raw = {
        "id": " p-1 ",
        "name": "Cabinet",
        "gallery_type": "Furniture",
        "status": "DRAFT",
        "sort_order": "7.9",
        "year": "1890",
        "rating": "4.5",
        "base_price": 12.0,
        "store_lat": "not-a-number",
        "owner_user_id": "5",
        "media_images": "a.jpg\n\n  b.jpg  ",
        "legacy_code": "X1",
    }
    once = normalize_product(raw)
    twice = normalize_product(once)
    assert once == twice
    assert once["id"] == "p-1"
    assert once["gallery_type"] == "designs"
    assert once["category"] == "All"
    assert once["status"] == "draft"
    assert once["sort_order"] == 7
    assert once["year"] == 1890
    assert once["rating"] == 4.5
    assert once["base_price"] == 12
    assert isinstance(once["base_price"], int)
    assert once["store_lat"] is None
    assert once["owner_user_id"] == 5
    assert once["media_images"] == ["a.jpg", "b.jpg"]
    assert once["extra_fields"] == {"legacy_code": "X1"}


def test_normalize_product_nested_extra_fields_win():
    product = normalize_product({
        "id": "p-2",
        "finish": "matte",
        "edition": 1,
        "extra_fields": {"finish": "gloss", "signed": True},
    })
    assert product["extra_fields"] == {"finish": "gloss", "edition": 1, "signed": True}


def test_numeric_fields_reject_booleans_and_non_finite_values():
    product = normalize_product({"id": "p-3", "rating": True, "year": float("inf"), "base_price": ""})
    assert product["rating"] is None
    assert product["year"] is None
    assert product["base_price"] is None


def test_sculpture_gets_default_category():
    product = normalize_product({"id": "p-4", "gallery_type": "sculpture"})
    assert product["category"] == "Sculpture"


def test_sort_products_breaks_ties_by_name():
    products = [
        normalize_product({"id": "b", "name": "Beta", "sort_order": 1}),
        normalize_product({"id": "a", "name": "Alpha", "sort_order": 1}),
        normalize_product({"id": "c", "name": "Gamma", "sort_order": 0}),
    ]
    assert [item["id"] for item in sort_products(products, "sort_order", "asc")] == ["c", "a", "b"]
    assert [item["id"] for item in sort_products(products, "name", "desc")] == ["c", "b", "a"]


def test_merge_product_changes_overlays_by_id():
    current = [normalize_product({
        "id": "p-1",
        "name": "Old",
        "material": "Oak",
        "owner_user_id": 4,
        "created_at": "2024-01-01T00:00:00.000Z",
    })]
    merged = merge_product_changes(current, [{"id": "p-1", "name": "New"}, {"id": "p-2", "name": "Fresh"}])
    by_id = {item["id"]: item for item in merged}
    assert by_id["p-1"]["name"] == "New"
    assert by_id["p-1"]["created_at"] == "2024-01-01T00:00:00.000Z"
    assert by_id["p-1"]["owner_user_id"] == 4
    assert by_id["p-2"]["name"] == "Fresh"


def test_merge_product_changes_is_repeatable():
    current = [normalize_product({"id": "p-1", "name": "Old", "created_at": "2024-01-01T00:00:00.000Z"})]
    change = [{"id": "p-1", "name": "New", "sort_order": 3}]
    first = merge_product_changes(current, change)
    second = merge_product_changes(first, change)

    def without_updated_at(items):
        return [{key: value for key, value in item.items() if key != "updated_at"} for item in items]

    assert without_updated_at(first) == without_updated_at(second)


def test_flatten_snapshot_paths():
    flat = flatten_snapshot({"a": {"b": 1}, "tags": ["x", "y"], "empty": [], "meta": {}})
    assert flat == {"a.b": 1, "tags[0]": "x", "tags[1]": "y", "empty": [], "meta": {}}


def test_diff_for_new_product_marks_every_leaf_changed():
    entries = diff(None, {"name": "Vase", "year": 1900})
    assert [entry["path"] for entry in entries] == ["name", "year"]
    assert all(entry["changed"] for entry in entries)
    assert entries[0]["currentValue"] is None
    assert entries[0]["requestedValue"] == "Vase"


def test_diff_reports_only_real_changes():
    base = {"name": "Vase", "media_images": ["a.jpg"], "extra_fields": {"k": 1}}
    proposed = {"name": "Vase", "media_images": ["a.jpg", "b.jpg"], "extra_fields": {"k": 2}}
    entries = {entry["path"]: entry for entry in diff(base, proposed)}
    assert sorted(entries) == ["extra_fields.k", "media_images[0]", "media_images[1]", "name"]
    assert entries["name"]["changed"] is False
    assert entries["media_images[0]"]["changed"] is False
    assert entries["media_images[1]"]["changed"] is True
    assert entries["media_images[1]"]["currentValue"] is None
    assert entries["extra_fields.k"]["currentValue"] == 1
    assert entries["extra_fields.k"]["requestedValue"] == 2


def test_dotted_keys_do_not_share_a_path_with_nested_keys():
    flat = flatten_snapshot({"extra_fields": {"a.b": 1, "a": {"b": 1}, "x[0]": 2}})
    assert flat == {'extra_fields["a.b"]': 1, "extra_fields.a.b": 1, 'extra_fields["x[0]"]': 2}

    base = {"extra_fields": {"a.b": 1, "a": {"b": 1}}}
    proposed = {"extra_fields": {"a.b": 2, "a": {"b": 1}}}
    entries = {entry["path"]: entry for entry in diff(base, proposed)}
    assert entries['extra_fields["a.b"]']["changed"] is True
    assert entries['extra_fields["a.b"]']["requestedValue"] == 2
    assert entries["extra_fields.a.b"]["changed"] is False
