import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Folder',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('path', models.CharField(db_index=True, help_text='Materialized path of ancestor ids: u{owner}.f{id}...', max_length=2048)),
                ('is_deleted', models.BooleanField(default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='folders', to=settings.AUTH_USER_MODEL)),
                ('parent', models.ForeignKey(blank=True, help_text='Empty for root folders', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='children', to='files.folder')),
            ],
            options={
                'verbose_name': 'Folder',
                'verbose_name_plural': 'Folders',
                'ordering': ['name'],
                'indexes': [
                    models.Index(fields=['owner', 'parent', 'is_deleted'], name='folders_owner_parent_idx'),
                    models.Index(fields=['is_deleted', 'deleted_at'], name='folders_deleted_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_deleted', False), ('parent__isnull', False)), fields=('owner', 'parent', 'name'), name='folders_live_sibling_name_unique'),
                    models.UniqueConstraint(condition=models.Q(('is_deleted', False), ('parent__isnull', True)), fields=('owner', 'name'), name='folders_live_root_name_unique'),
                ],
            },
        ),
        migrations.CreateModel(
            name='File',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('original_name', models.CharField(max_length=500)),
                ('folder_path', models.CharField(blank=True, db_index=True, help_text='Copy of folder.path at the time of the last write', max_length=2048, null=True)),
                ('size_bytes', models.BigIntegerField(help_text='File size in bytes')),
                ('content_type', models.CharField(max_length=255)),
                ('checksum_sha256', models.CharField(help_text='SHA256 hash for integrity verification', max_length=64)),
                ('blob_key', models.CharField(help_text='Key of the final blob in storage', max_length=64, unique=True)),
                ('staging_key', models.CharField(blank=True, default='', help_text='Key of the staged upload, cleared once placed', max_length=128)),
                ('upload_status', models.CharField(choices=[('PENDING', 'Pending'), ('COMPLETED', 'Completed'), ('FAILED', 'Failed')], db_index=True, default='PENDING', max_length=16)),
                ('is_deleted', models.BooleanField(default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('folder', models.ForeignKey(blank=True, help_text='Empty for files in the root', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='files', to='files.folder')),
                ('owner', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='files', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'ordering': ['original_name'],
                'indexes': [
                    models.Index(fields=['owner', 'folder', 'is_deleted', 'upload_status'], name='files_owner_folder_idx'),
                    models.Index(fields=['upload_status', 'created_at'], name='files_status_created_idx'),
                    models.Index(fields=['is_deleted', 'deleted_at'], name='files_deleted_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('folder__isnull', False), ('is_deleted', False)), fields=('owner', 'folder', 'original_name'), name='files_live_folder_name_unique'),
                    models.UniqueConstraint(condition=models.Q(('folder__isnull', True), ('is_deleted', False)), fields=('owner', 'original_name'), name='files_live_root_name_unique'),
                ],
            },
        ),
    ]
