"""End-to-end tests: serialize a graph, deserialize it, compare structure and identity."""

import json
import threading

from refson import (
    Serializer,
    SerializerOptions,
    TrackerStatistics,
    deserialize,
    deserialize_by_type_name,
    last_statistics,
    serialize,
    serialize_by_type_name,
)

from records import (
    Bag,
    Circle,
    Company,
    Department,
    Drawing,
    Holder,
    Keeper,
    Link,
    Pair,
    Person,
    Point,
    Shelf,
    Square,
    Tag,
    TreeNode,
)


def roundtrip(value, cls=None, **kwargs):
    """Serialize and deserialize a value."""
    return deserialize(serialize(value, **kwargs), cls if cls is not None else type(value))


def build_company():
    company = Company("TechCorp", address="1 Main St", founded_year=2010)
    alice = Person("Alice", 35, "alice@techcorp.com")
    bob = Person("Bob", 28, "bob@techcorp.com")
    carol = Person("Carol", 42)
    alice.password = "secret"
    for person in (alice, bob, carol):
        company.add_employee(person)

    engineering = Department("Engineering")
    engineering.manager = alice
    engineering.employees = [alice, bob]
    engineering.projects = ("compiler", "runtime")
    engineering.budget = 1_000_000.0
    engineering.department_code = 7

    sales = Department("Sales")
    sales.manager = carol
    sales.employees = [carol]

    company.add_department(engineering)
    company.add_department(sales)
    company.ceo = alice
    company.revenue = 5.0
    return company


class TestCompanyGraph:
    """Test the full company example: shared people and back-links."""

    def test_structure(self):
        restored = roundtrip(build_company())

        assert restored.name == "TechCorp"
        assert restored.address == "1 Main St"
        assert restored.founded_year == 2010
        assert [p.name for p in restored.employees] == ["Alice", "Bob", "Carol"]
        assert [d.name for d in restored.departments] == ["Engineering", "Sales"]
        assert restored.departments[0].projects == ("compiler", "runtime")
        assert restored.departments[0].budget == 1_000_000.0

    def test_identity(self):
        restored = roundtrip(build_company())
        alice, bob, carol = restored.employees
        engineering, sales = restored.departments

        assert restored.ceo is alice
        assert engineering.manager is alice
        assert engineering.employees[0] is alice
        assert engineering.employees[1] is bob
        assert sales.manager is carol
        assert all(p.company is restored for p in restored.employees)
        assert engineering.company is restored
        assert sales.company is restored

    def test_ignored_fields_reset(self):
        restored = roundtrip(build_company())
        assert restored.revenue == 0.0
        assert restored.employees[0].password is None
        assert restored.departments[0].department_code == 0

    def test_each_object_expanded_once(self):
        company = build_company()
        text = serialize(company)
        ids = [int(chunk.split(",")[0].split("}")[0]) for chunk in text.split('"$id":')[1:]]
        assert sorted(ids) == list(range(1, 7))

    def test_statistics(self):
        serialize(build_company())
        statistics = last_statistics()
        assert statistics.unique_ids == 6
        assert statistics.cyclic_count == 5
        assert statistics.shared_count == 6

    def test_pretty_roundtrip(self):
        company = build_company()
        pretty = serialize(company, pretty=True)
        assert json.loads(pretty) == json.loads(serialize(company))
        assert deserialize(pretty, Company).ceo.name == "Alice"

    def test_serialize_is_stable(self):
        company = build_company()
        assert serialize(company) == serialize(company)
        assert serialize(roundtrip(company)) == serialize(company)


class TestShapes:
    """Test assorted graph shapes."""

    def test_self_loop(self):
        node = TreeNode("loop")
        node.child = node
        restored = roundtrip(node)
        assert restored.child is restored

    def test_tree_with_parent_links(self):
        root = TreeNode("root")
        for label in "abc":
            root.children.append(TreeNode(label, parent=root))
        restored = roundtrip(root)

        assert [c.label for c in restored.children] == ["a", "b", "c"]
        assert all(c.parent is restored for c in restored.children)

    def test_diamond(self):
        shared = TreeNode("shared")
        restored = roundtrip(Pair(left=shared, right=shared))
        assert restored.left is restored.right
        assert restored.left.label == "shared"

    def test_equal_objects_stay_distinct(self):
        restored = roundtrip(Holder(payload=[Point(1, 2), Point(1, 2)]))
        first, second = restored.payload
        assert first == second
        assert first is not second

    def test_immutable_containers(self):
        node = TreeNode("n")
        restored = roundtrip(Bag(items=(node, node), unique=frozenset({node}), anything=node))
        assert restored.items[0] is restored.items[1]
        assert restored.unique == frozenset({restored.items[0]})
        assert restored.anything is restored.items[0]

    def test_frozen_record(self):
        assert roundtrip(Point(3, 4)) == Point(3, 4)

    def test_polymorphism(self):
        drawing = Drawing(
            title="sketch",
            main=Circle(name="sun", radius=3.0),
            shapes=[Square(name="box", side=2.0)],
            extra=[Point(0, 1), "note", 7],
        )
        restored = roundtrip(drawing)

        assert isinstance(restored.main, Circle)
        assert restored.main.radius == 3.0
        assert isinstance(restored.shapes[0], Square)
        assert restored.extra == [Point(0, 1), "note", 7]

    def test_primitives_and_arrays(self):
        assert roundtrip([1, "a", None, [2.5]], list) == [1, "a", None, [2.5]]
        assert roundtrip("text", str) == "text"
        assert roundtrip(None, int) is None

    def test_strict_acyclic_graph(self):
        shared = TreeNode("shared")
        restored = roundtrip(Pair(left=shared, right=shared), strict=True)
        assert restored.left is restored.right


class TestByTypeName:
    """Test encoding and decoding by registered type name."""

    def test_roundtrip(self):
        company = build_company()
        text = serialize_by_type_name("records.Company", company)
        restored = deserialize(text)

        assert type(restored) is Company
        assert restored.ceo is restored.employees[0]

    def test_decode_named(self):
        text = serialize(Point(5, 6))
        assert deserialize_by_type_name(text, "records.Point") == Point(5, 6)


class TestSerializerFacade:
    """Test the Serializer class and per-thread statistics."""

    def test_serializer_roundtrip(self):
        serializer = Serializer(SerializerOptions(pretty=True))
        company = build_company()
        restored = serializer.deserialize(serializer.serialize(company), Company)
        assert restored.departments[1].manager is restored.employees[2]
        assert serializer.statistics.unique_ids == 6

    def test_last_statistics_per_thread(self):
        serialize(TreeNode("main"))
        seen = []

        def worker():
            seen.append(last_statistics())
            serialize(Pair())
            seen.append(last_statistics())

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen[0] is None
        assert seen[1] == TrackerStatistics(total_visited=1, unique_ids=1)
        assert last_statistics().unique_ids == 1

    def test_concurrent_serialization(self):
        results = {}

        def worker(index):
            results[index] = serialize(build_company())

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(results.values())) == 1


def build_chain(length):
    head = None
    for value in reversed(range(length)):
        head = Link(value, head)
    return head


class TestDeepGraphs:
    """Test graphs nested far deeper than the interpreter recursion limit."""

    def test_long_chain(self):
        restored = roundtrip(build_chain(3000))
        values = []
        while restored is not None:
            values.append(restored.value)
            restored = restored.next
        assert values == list(range(3000))

    def test_long_chain_pretty(self):
        text = serialize(build_chain(400), pretty=True)
        assert text.count('"$id"') == 400
        assert deserialize(text, Link).next.next.value == 2

    def test_long_cycle(self):
        head = build_chain(2000)
        tail = head
        while tail.next is not None:
            tail = tail.next
        tail.next = head

        restored = roundtrip(head)
        node = restored
        for _ in range(2000):
            node = node.next
        assert node is restored
        assert last_statistics().cyclic_count == 1

    def test_nested_arrays(self):
        value = []
        for _ in range(2000):
            value = [value]
        restored = roundtrip(value, list)
        for _ in range(2000):
            restored = restored[0]
        assert restored == []


class TestMappings:
    """Test dict[str, X] fields end to end."""

    def test_shared_values(self):
        keeper = Keeper("k")
        shelf = Shelf(keeper=keeper, keepers={"a": keeper, "b": Keeper("b")}, counts={"n": 3})
        restored = roundtrip(shelf)

        assert restored.counts == {"n": 3}
        assert restored.keepers["a"] is restored.keeper
        assert restored.keepers["b"].name == "b"

    def test_hashed_members_with_shared_owner(self):
        keeper = Keeper("k")
        shelf = Shelf(tags=frozenset({Tag("a", keeper), Tag("b", keeper)}), keeper=keeper)
        restored = roundtrip(shelf)

        assert {t.name for t in restored.tags} == {"a", "b"}
        assert all(t.owner is restored.keeper for t in restored.tags)
        assert Tag("a", restored.keeper) in restored.tags

    def test_untyped_payload(self):
        holder = Holder(payload={"point": Point(1, 2), "items": [1, {"x": None}]})
        restored = roundtrip(holder)
        assert restored.payload == {"point": Point(1, 2), "items": [1, {"x": None}]}
