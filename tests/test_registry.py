"""Tests for the person registry."""

import json
import threading
from pathlib import Path

import pytest

from photo_faces.exceptions import (
    ConfigurationError,
    ImageIOError,
    NameConflictError,
    PersonNotFoundError,
)
from photo_faces.registry import PersonRegistry
from photo_faces.types import BoundingBox, Exemplar

from conftest import unit

BOX = BoundingBox(x=20, y=20, width=50, height=40)


def _reload(storage):
    return PersonRegistry(storage.people_path, storage.samples_path)


class TestCreateOrUpdate:
    """Test cases for the name upsert."""

    def test_creates_person(self, registry):
        person = registry.create_or_update("Alice")

        assert person.name == "Alice"
        assert person.exemplars == []
        assert person.thumbnail_path is None
        assert person.image_count == 0
        assert person.date_created == person.date_modified
        assert len(registry) == 1

    def test_upsert_is_idempotent(self, registry):
        first = registry.create_or_update("Alice")
        second = registry.create_or_update("Alice")

        assert first.id == second.id
        assert len(registry) == 1

    def test_lookup_is_case_insensitive_and_updates_casing(self, registry):
        first = registry.create_or_update("alice")
        second = registry.create_or_update("ALICE")

        assert second.id == first.id
        assert second.name == "ALICE"
        assert second.date_modified >= first.date_modified

    def test_merges_fields(self, registry):
        exemplars = [Exemplar("a", unit(0), "a.jpg"), Exemplar("b", unit(1), "b.jpg")]
        person = registry.create_or_update("Alice", exemplars=exemplars)
        assert person.thumbnail_path == "a.jpg"

        updated = registry.create_or_update("Alice", image_count=4, thumbnail_path="b.jpg")

        assert updated.id == person.id
        assert updated.image_count == 4
        assert updated.thumbnail_path == "b.jpg"

    def test_thumbnail_must_be_an_exemplar_sample(self, registry, tmp_path):
        photo = tmp_path / "precious.jpg"
        photo.write_bytes(b"original photo")

        with pytest.raises(ValueError):
            registry.create_or_update("Alice", thumbnail_path=str(photo))
        assert len(registry) == 0

        person = registry.create_or_update("Alice")
        with pytest.raises(ValueError):
            registry.create_or_update("Alice", thumbnail_path=str(photo))
        assert registry.get_by_id(person.id).thumbnail_path is None
        assert photo.exists()

    def test_replacing_exemplars_rederives_thumbnail(self, registry, storage):
        storage.samples_path.mkdir(parents=True, exist_ok=True)
        old_sample = storage.samples_path / "old.jpg"
        old_sample.write_bytes(b"old")
        registry.create_or_update("Alice", exemplars=[Exemplar("a", unit(0), str(old_sample))])

        person = registry.create_or_update("Alice", exemplars=[Exemplar("b", unit(1), "B.jpg")])
        assert person.thumbnail_path == "B.jpg"
        assert not old_sample.exists()

        person = registry.create_or_update("Alice", exemplars=[])
        assert person.thumbnail_path is None
        assert _reload(storage).get_by_id(person.id).thumbnail_path is None

    def test_exemplars_field_sets_default_thumbnail(self, registry):
        person = registry.create_or_update(
            "Alice",
            exemplars=[{"face_id": "f1", "embedding": unit(0), "sample_image_path": "s1.jpg"}],
        )
        assert person.exemplars == [Exemplar("f1", unit(0), "s1.jpg")]
        assert person.thumbnail_path == "s1.jpg"

    def test_unknown_field_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.create_or_update("Alice", nickname="Al")
        assert len(registry) == 0

    def test_blank_name_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.create_or_update("   ")

    def test_persisted_write_through(self, registry, storage):
        person = registry.create_or_update("Alice")

        data = json.loads(storage.people_path.read_text())
        assert data["version"] == 1
        assert [p["id"] for p in data["people"]] == [person.id]
        assert _reload(storage).get_by_id(person.id) == person


class TestRename:
    """Test cases for renaming."""

    def test_rename(self, registry):
        person = registry.create_or_update("Alice")
        renamed = registry.rename(person.id, "Alicia")

        assert renamed.name == "Alicia"
        assert registry.get_by_name("alicia").id == person.id
        assert registry.get_by_name("Alice") is None

    def test_rename_changes_only_casing(self, registry):
        person = registry.create_or_update("alice")
        assert registry.rename(person.id, "Alice").name == "Alice"

    def test_rename_conflict(self, registry):
        registry.create_or_update("Alice")
        bob = registry.create_or_update("Bob")

        with pytest.raises(NameConflictError):
            registry.rename(bob.id, "alice")

    def test_rename_unknown(self, registry):
        with pytest.raises(PersonNotFoundError):
            registry.rename("nope", "X")


class TestExemplars:
    """Test cases for adding and removing exemplar faces."""

    def test_add_exemplar_stores_cropped_sample(self, registry, make_image):
        image = make_image("alice.jpg")
        person = registry.create_or_update("Alice")

        updated = registry.add_exemplar(person.id, image, BOX, unit(0))

        assert len(updated.exemplars) == 1
        exemplar = updated.exemplars[0]
        sample = Path(exemplar.sample_image_path)
        assert sample.exists()
        assert sample.name == f"{person.id}_{exemplar.face_id}.jpg"
        assert updated.thumbnail_path == exemplar.sample_image_path
        assert updated.date_modified >= person.date_modified

    def test_add_exemplar_copies_undecodable_source(self, registry, tmp_path):
        source = tmp_path / "broken.jpg"
        source.write_bytes(b"not really a jpeg")
        person = registry.create_or_update("Alice")

        updated = registry.add_exemplar(person.id, source, BOX, unit(0))

        sample = Path(updated.exemplars[0].sample_image_path)
        assert sample.read_bytes() == b"not really a jpeg"

    def test_add_exemplar_missing_source(self, registry, tmp_path):
        person = registry.create_or_update("Alice")
        with pytest.raises(ImageIOError):
            registry.add_exemplar(person.id, tmp_path / "missing.jpg", BOX, unit(0))
        assert registry.get_by_id(person.id).exemplars == []

    def test_add_exemplar_unknown_person(self, registry, make_image):
        with pytest.raises(PersonNotFoundError):
            registry.add_exemplar("nope", make_image(), BOX, unit(0))

    def test_add_exemplar_dimension_mismatch(self, registry, make_image):
        image = make_image()
        alice = registry.create_or_update("Alice")
        bob = registry.create_or_update("Bob")
        registry.add_exemplar(alice.id, image, BOX, unit(0))

        with pytest.raises(ConfigurationError):
            registry.add_exemplar(bob.id, image, BOX, [1.0, 0.0])
        assert registry.embedding_dim == len(unit(0))

    def test_thumbnail_reassigned_on_removal(self, registry, make_image):
        image = make_image()
        person = registry.create_or_update("Alice")
        person = registry.add_exemplar(person.id, image, BOX, unit(0))
        person = registry.add_exemplar(person.id, image, BOX, unit(1))
        first, second = person.exemplars
        assert person.thumbnail_path == first.sample_image_path

        person = registry.remove_exemplar(person.id, first.face_id)
        assert person.thumbnail_path == second.sample_image_path
        assert not Path(first.sample_image_path).exists()

        person = registry.remove_exemplar(person.id, second.face_id)
        assert person.thumbnail_path is None
        assert person.exemplars == []

    def test_remove_unknown_face_is_noop(self, registry, make_image):
        person = registry.create_or_update("Alice")
        person = registry.add_exemplar(person.id, make_image(), BOX, unit(0))

        assert registry.remove_exemplar(person.id, "no-such-face") == person

    def test_remove_exemplar_unknown_person(self, registry):
        with pytest.raises(PersonNotFoundError):
            registry.remove_exemplar("nope", "face")


class TestDeleteAndMatches:
    """Test cases for deletion and match counting."""

    def test_delete_removes_person_and_samples(self, registry, make_image):
        person = registry.create_or_update("Alice")
        person = registry.add_exemplar(person.id, make_image(), BOX, unit(0))
        sample = Path(person.exemplars[0].sample_image_path)

        assert registry.delete(person.id) is True
        assert registry.get_by_id(person.id) is None
        assert not sample.exists()

    def test_delete_tolerates_missing_sample(self, registry, make_image):
        person = registry.create_or_update("Alice")
        person = registry.add_exemplar(person.id, make_image(), BOX, unit(0))
        Path(person.exemplars[0].sample_image_path).unlink()

        assert registry.delete(person.id) is True

    def test_delete_keeps_files_outside_samples_dir(self, registry, tmp_path):
        photo = tmp_path / "precious.jpg"
        photo.write_bytes(b"original photo")
        person = registry.create_or_update(
            "Alice", exemplars=[Exemplar("a", unit(0), str(photo))]
        )
        assert person.thumbnail_path == str(photo)

        assert registry.delete(person.id) is True
        assert photo.read_bytes() == b"original photo"

    def test_delete_unknown_returns_false(self, registry):
        assert registry.delete("nope") is False

    def test_record_match_counts_each_image_once(self, registry):
        person = registry.create_or_update("Alice")

        after_first = registry.record_match(person.id, "fp-1")
        after_repeat = registry.record_match(person.id, "fp-1")
        after_second = registry.record_match(person.id, "fp-2")

        assert after_first.image_count == 1
        assert after_repeat.image_count == 1
        assert after_repeat.date_modified == after_first.date_modified
        assert after_second.image_count == 2

    def test_record_match_unknown_person(self, registry):
        assert registry.record_match("nope", "fp") is None


class TestReadsAndPersistence:
    """Test cases for read isolation and loading."""

    def test_reads_return_copies(self, registry):
        person = registry.create_or_update("Alice")
        person.name = "Mallory"
        registry.get_all()[0].exemplars.append(Exemplar("x", unit(0), "x.jpg"))

        stored = registry.get_by_id(person.id)
        assert stored.name == "Alice"
        assert stored.exemplars == []

    def test_get_all_keeps_insertion_order(self, registry):
        names = ["Carol", "alice", "Bob"]
        for name in names:
            registry.create_or_update(name)
        assert [p.name for p in registry.get_all()] == names

    def test_round_trip_through_disk(self, registry, storage, make_image):
        person = registry.create_or_update("Alice")
        registry.add_exemplar(person.id, make_image(), BOX, [0.25, -0.5, 0.75, 0, 0, 0, 0, 0.1])
        registry.record_match(person.id, "fp")

        assert _reload(storage).get_all() == registry.get_all()

    def test_corrupt_store_starts_empty(self, storage):
        storage.people_path.parent.mkdir(parents=True, exist_ok=True)
        storage.people_path.write_text("{ broken")

        assert len(_reload(storage)) == 0

    def test_loads_legacy_layout(self, storage):
        storage.people_path.parent.mkdir(parents=True, exist_ok=True)
        storage.people_path.write_text(json.dumps({
            "people": [{
                "id": "p1",
                "name": "Bob",
                "faceIds": ["f1", "f2"],
                "faceDescriptors": [[1, 0, 0], [0, 1, 0]],
                "sampleImages": ["people/p1_f1.jpg", "people/p1_f2.jpg"],
                "thumbnailPath": "people/p1_f1.jpg",
                "dateCreated": "2023-05-01T10:00:00.000Z",
                "dateModified": "2023-05-02T10:00:00.000Z",
                "imageCount": 7,
            }]
        }))

        bob = _reload(storage).get_by_id("p1")

        assert bob.name == "Bob"
        assert bob.face_ids == ["f1", "f2"]
        assert bob.exemplars[1].embedding == [0.0, 1.0, 0.0]
        assert bob.thumbnail_path == "people/p1_f1.jpg"
        assert bob.image_count == 7
        assert bob.date_created.year == 2023

    def test_persist_failure_raises(self, registry, storage, monkeypatch):
        person = registry.create_or_update("Alice")

        def fail(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("photo_faces.registry.tempfile.mkstemp", fail)
        with pytest.raises(ImageIOError):
            registry.rename(person.id, "Alicia")


class TestConcurrentMutations:
    """Test cases for mutations from several threads."""

    def test_no_lost_updates(self, registry, storage, make_image):
        image = make_image()
        alice = registry.create_or_update("Alice")
        errors = []

        def worker(n):
            try:
                for i in range(5):
                    registry.record_match(alice.id, f"fp-{n}-{i}")
                    registry.add_exemplar(alice.id, image, BOX, unit(n))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert errors == []
        person = registry.get_by_id(alice.id)
        assert person.image_count == 20
        assert len(person.exemplars) == 20
        assert len(set(person.face_ids)) == 20

        reloaded = _reload(storage).get_by_id(alice.id)
        assert reloaded.image_count == 20
        assert len(reloaded.exemplars) == 20
